"""
Pure domain rules: time-window arithmetic and the reservation lifecycle table.
No I/O happens in this package.
"""
