"""Built-in reference tables: tax rules, currencies, country continents.

Rates follow the EU VAT Directive (2006/112/EC) and published national
rates. The US row is a placeholder since sales tax varies by state.
"""

from __future__ import annotations

from decimal import Decimal

from billing_core.catalog.models import Currency, TaxRule

# (country, tax type, rate %, reverse charge available)
_TAX_ROWS: list[tuple[str, str, str, bool]] = [
    # Europe - VAT
    ("AT", "VAT", "20", True),
    ("BE", "VAT", "21", True),
    ("BG", "VAT", "20", True),
    ("HR", "VAT", "25", True),
    ("CY", "VAT", "19", True),
    ("CZ", "VAT", "21", True),
    ("DK", "VAT", "25", True),
    ("EE", "VAT", "20", True),
    ("FI", "VAT", "24", True),
    ("FR", "VAT", "20", True),
    ("DE", "VAT", "19", True),
    ("GR", "VAT", "24", True),
    ("HU", "VAT", "27", True),
    ("IE", "VAT", "23", True),
    ("IT", "VAT", "22", True),
    ("LV", "VAT", "21", True),
    ("LT", "VAT", "21", True),
    ("LU", "VAT", "17", True),
    ("MT", "VAT", "18", True),
    ("NL", "VAT", "21", True),
    ("PL", "VAT", "23", True),
    ("PT", "VAT", "23", True),
    ("RO", "VAT", "19", True),
    ("SK", "VAT", "20", True),
    ("SI", "VAT", "22", True),
    ("ES", "VAT", "21", True),
    ("SE", "VAT", "25", True),
    ("GB", "VAT", "20", True),
    ("NO", "VAT", "25", False),
    ("CH", "VAT", "7.7", False),
    # Asia-Pacific
    ("AU", "GST", "10", False),
    ("NZ", "GST", "15", False),
    ("SG", "GST", "9", False),
    ("MY", "SST", "6", False),
    ("IN", "GST", "18", False),
    ("ID", "VAT", "11", False),
    ("PH", "VAT", "12", False),
    ("TH", "VAT", "7", False),
    ("VN", "VAT", "10", False),
    ("JP", "Consumption Tax", "10", False),
    ("KR", "VAT", "10", False),
    ("CN", "VAT", "13", False),
    ("TW", "VAT", "5", False),
    ("HK", "None", "0", False),
    # Middle East
    ("AE", "VAT", "5", False),
    ("SA", "VAT", "15", False),
    ("BH", "VAT", "10", False),
    ("OM", "VAT", "5", False),
    ("QA", "None", "0", False),
    ("KW", "None", "0", False),
    ("IL", "VAT", "17", False),
    # Americas
    ("US", "Sales Tax", "0", False),
    ("CA", "GST/HST", "5", False),
    ("MX", "IVA", "16", False),
    ("BR", "IVA", "17", False),
    ("CL", "IVA", "19", False),
    ("CO", "IVA", "19", False),
    ("AR", "IVA", "21", False),
    # Africa
    ("ZA", "VAT", "15", False),
    ("NG", "VAT", "7.5", False),
    ("KE", "VAT", "16", False),
    ("EG", "VAT", "14", False),
]

DEFAULT_TAX_RULES: dict[str, TaxRule] = {
    code: TaxRule(country_code=code, tax_type=tax_type, rate=Decimal(rate), reverse_charge=rc)
    for code, tax_type, rate, rc in _TAX_ROWS
}

_CURRENCY_ROWS: list[tuple[str, str, str]] = [
    ("USD", "US Dollar", "$"),
    ("EUR", "Euro", "€"),
    ("GBP", "British Pound", "£"),
    ("JPY", "Japanese Yen", "¥"),
    ("AUD", "Australian Dollar", "A$"),
    ("CAD", "Canadian Dollar", "C$"),
    ("CHF", "Swiss Franc", "CHF"),
    ("CNY", "Chinese Yuan", "¥"),
    ("SEK", "Swedish Krona", "kr"),
    ("NZD", "New Zealand Dollar", "NZ$"),
    ("SGD", "Singapore Dollar", "S$"),
    ("HKD", "Hong Kong Dollar", "HK$"),
    ("NOK", "Norwegian Krone", "kr"),
    ("KRW", "South Korean Won", "₩"),
    ("TRY", "Turkish Lira", "₺"),
    ("INR", "Indian Rupee", "₹"),
    ("MXN", "Mexican Peso", "MX$"),
    ("BRL", "Brazilian Real", "R$"),
    ("ZAR", "South African Rand", "R"),
    ("AED", "UAE Dirham", "AED"),
    ("SAR", "Saudi Riyal", "SAR"),
    ("QAR", "Qatari Riyal", "QAR"),
    ("KWD", "Kuwaiti Dinar", "KWD"),
    ("BHD", "Bahraini Dinar", "BHD"),
    ("OMR", "Omani Rial", "OMR"),
    ("RUB", "Russian Ruble", "₽"),
    ("PLN", "Polish Zloty", "zł"),
    ("THB", "Thai Baht", "฿"),
    ("MYR", "Malaysian Ringgit", "RM"),
    ("IDR", "Indonesian Rupiah", "Rp"),
    ("PHP", "Philippine Peso", "₱"),
    ("VND", "Vietnamese Dong", "₫"),
    ("DKK", "Danish Krone", "kr"),
    ("CZK", "Czech Koruna", "Kč"),
    ("HUF", "Hungarian Forint", "Ft"),
    ("RON", "Romanian Leu", "lei"),
    ("ILS", "Israeli Shekel", "₪"),
    ("CLP", "Chilean Peso", "CLP"),
    ("COP", "Colombian Peso", "COP"),
    ("ARS", "Argentine Peso", "ARS"),
    ("EGP", "Egyptian Pound", "E£"),
    ("PKR", "Pakistani Rupee", "₨"),
    ("BDT", "Bangladeshi Taka", "৳"),
    ("NGN", "Nigerian Naira", "₦"),
    ("KES", "Kenyan Shilling", "KSh"),
    ("TWD", "Taiwan Dollar", "NT$"),
]

DEFAULT_CURRENCIES: dict[str, Currency] = {
    code: Currency(code=code, name=name, symbol=symbol) for code, name, symbol in _CURRENCY_ROWS
}

# ISO 3166-1 alpha-2 -> continent code (AF, AS, EU, NA, OC, SA).
DEFAULT_CONTINENTS: dict[str, str] = {
    # Africa
    "DZ": "AF", "EG": "AF", "KE": "AF", "NG": "AF", "ZA": "AF",
    # Asia (including the Middle East)
    "AE": "AS", "AF": "AS", "BD": "AS", "BH": "AS", "CN": "AS", "HK": "AS",
    "ID": "AS", "IL": "AS", "IN": "AS", "JO": "AS", "JP": "AS", "KR": "AS",
    "KW": "AS", "MY": "AS", "OM": "AS", "PH": "AS", "PK": "AS", "QA": "AS",
    "SA": "AS", "SG": "AS", "TH": "AS", "TW": "AS", "VN": "AS",
    # Europe
    "AL": "EU", "AT": "EU", "BE": "EU", "BG": "EU", "CH": "EU", "CY": "EU",
    "CZ": "EU", "DE": "EU", "DK": "EU", "EE": "EU", "ES": "EU", "FI": "EU",
    "FR": "EU", "GB": "EU", "GR": "EU", "HR": "EU", "HU": "EU", "IE": "EU",
    "IT": "EU", "LT": "EU", "LU": "EU", "LV": "EU", "MT": "EU", "NL": "EU",
    "NO": "EU", "PL": "EU", "PT": "EU", "RO": "EU", "RU": "EU", "SE": "EU",
    "SI": "EU", "SK": "EU", "TR": "EU",
    # North America
    "CA": "NA", "MX": "NA", "US": "NA",
    # Oceania
    "AU": "OC", "NZ": "OC",
    # South America
    "AR": "SA", "BR": "SA", "CL": "SA", "CO": "SA",
}
