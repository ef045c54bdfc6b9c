from .formatting import format_money, parse_amount_token

__all__ = ["format_money", "parse_amount_token"]
