from .validators import ERROR_MESSAGE_LIMIT, first_missing_number, truncate_message

__all__ = ["ERROR_MESSAGE_LIMIT", "first_missing_number", "truncate_message"]
