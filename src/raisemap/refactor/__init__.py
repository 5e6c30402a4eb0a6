from raisemap.refactor.fixes import FixSynthesizer, attach_fixes, locate_docstrings
from raisemap.refactor.model import FixPlan, Position, TextEdit, apply_text_edits

__all__ = [
    "FixPlan",
    "FixSynthesizer",
    "Position",
    "TextEdit",
    "apply_text_edits",
    "attach_fixes",
    "locate_docstrings",
]
