"""patchloop: model-driven plan/edit/validate/evaluate loop for a working tree."""

__version__ = "0.1.0"
