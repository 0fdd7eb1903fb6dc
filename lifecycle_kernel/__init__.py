"""
Lifecycle Kernel

A transactional tracker for units of garment production with:
- Strictly ordered stage sequences per unit type
- Quality checkpoint gating on stage completion
- Material allocation vs. consumption ledgers
- Numbered rework attempts rolled into unit cost
- Late-stage detection and supervisor review freezes
- An append-only transition history
"""

__version__ = "0.1.0"
