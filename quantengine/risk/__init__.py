"""Portfolio risk metrics, position sizing, stress scenarios and alert buffers.
Every component is a pure function of its inputs; nothing here holds state between calls.
"""
