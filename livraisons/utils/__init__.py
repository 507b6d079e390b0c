from livraisons.utils.helpers import format_currency, to_amount, get_timezone

__all__ = ['format_currency', 'to_amount', 'get_timezone']
