from .expander import Occurrence, RecurrenceExpander

__all__ = ["Occurrence", "RecurrenceExpander"]
