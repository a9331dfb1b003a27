"""Pure domain core: quantities, movement rules, metric helpers, clocks."""
