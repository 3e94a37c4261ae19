# quotedoc/services/token_resolver.py
"""
Build the complete token -> value table for one render.

Templates are authored outside this system, so the same field shows up as
`Company Name`, `Company_Name`, `company name` or `companyName`. The resolver
registers every spelling variant, folds known aliases into canonical field
groups, derives the values a template may ask for but the caller did not
supply, and finally guarantees that no entry is left as a sentinel.

Resolution never raises: missing or malformed input degrades to defaults.
"""
from __future__ import annotations

import calendar
import datetime
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, DecimalException, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from quotedoc.config import (
    DEFAULT_INSTANCE_TYPE,
    INSTANCE_TYPE_COSTS,
    NO_DATA_SIZE_MIGRATION_TYPES,
)

logger = logging.getLogger(__name__)

# -----------------------------
# Names and defaults
# -----------------------------
_DELIMS = re.compile(r"^\s*\{\{\s*(.*?)\s*\}\}\s*$", re.S)
_SEPARATORS = re.compile(r"[\s_\-]+")
_SENTINELS = {"undefined", "null", "none"}

DEFAULT_BY_KIND: Dict[str, str] = {
    "money": "$0.00",
    "count": "0",
    "duration": "1",
    "date": "N/A",
    "text": "",
}

_MONEY_HINTS = ("cost", "price", "amount", "total", "fee", "rate", "charge")
_DURATION_HINTS = ("duration", "month")
_COUNT_HINTS = ("count", "number", "num", "size", "users", "qty", "quantity", "instances", "messages")


def strip_delimiters(key: str) -> str:
    """`{{ Company Name }}` -> `Company Name`; bare keys are only trimmed."""
    m = _DELIMS.match(key or "")
    return (m.group(1) if m else (key or "")).strip()


def normalize_key(key: str) -> str:
    """Spelling-insensitive form: no delimiters, no separators, lowercase."""
    return _SEPARATORS.sub("", strip_delimiters(key)).lower()


def spelling_variants(key: str) -> List[str]:
    """
    The original key plus its underscore, space and kebab spellings.
    >>> spelling_variants("Company Name")
    ['Company Name', 'Company_Name', 'Company-Name']
    """
    base = strip_delimiters(key)
    out = [base]
    if _SEPARATORS.search(base):
        words = [w for w in _SEPARATORS.split(base) if w]
        out += ["_".join(words), " ".join(words), "-".join(words)]
    seen = set()
    return [k for k in out if k and not (k in seen or seen.add(k))]


def default_for_key(key: str) -> str:
    """Type-appropriate default inferred from the token name."""
    n = normalize_key(key)
    if "discount" in n:
        return ""
    if "date" in n:
        return DEFAULT_BY_KIND["date"]
    if any(h in n for h in _MONEY_HINTS):
        return DEFAULT_BY_KIND["money"]
    if any(h in n for h in _DURATION_HINTS):
        return DEFAULT_BY_KIND["duration"]
    if any(h in n for h in _COUNT_HINTS):
        return DEFAULT_BY_KIND["count"]
    return DEFAULT_BY_KIND["text"]


USERS_COUNT_ALIASES = ("users_count", "userscount", "users", "user_count", "numberOfUsers", "number_of_users")
USERS_COST_ALIASES = ("users_cost", "user_cost", "usersCost")


# -----------------------------
# Canonical field groups
# -----------------------------
@dataclass(frozen=True)
class FieldGroup:
    """
    One logical value and every spelling a template may use for it.

    `aliases` are both read (first non-empty wins) and written.
    `fallbacks` are only read, after the aliases, e.g. a discounted total
    falls back to the plain total without overwriting it.
    """
    name: str
    aliases: Tuple[str, ...]
    kind: str = "text"
    default: Optional[str] = None
    fallbacks: Tuple[str, ...] = ()

    @property
    def default_value(self) -> str:
        return self.default if self.default is not None else DEFAULT_BY_KIND[self.kind]


def _combination_groups(prefix: str) -> List[FieldGroup]:
    p = prefix
    return [
        FieldGroup(f"{p}_users_count", (f"{p}_users_count", f"{p}_user_count", f"{p}_users"), "count"),
        FieldGroup(f"{p}_users_cost", (f"{p}_users_cost", f"{p}_user_cost"), "money"),
        FieldGroup(f"{p}_migration_cost",
                   (f"{p}_migration_cost", f"{p}_price_migration", f"{p}_migration_price"), "money"),
        FieldGroup(f"{p}_data_size", (f"{p}_data_size", f"{p}_data_size_gb"), "count"),
        FieldGroup(f"{p}_data_cost", (f"{p}_data_cost", f"{p}_price_data"), "money"),
        FieldGroup(f"{p}_duration", (f"{p}_duration", f"{p}_duration_months"), "duration"),
        FieldGroup(f"{p}_total_price", (f"{p}_total_price", f"{p}_total"), "money"),
    ]


FIELD_GROUPS: Tuple[FieldGroup, ...] = tuple([
    FieldGroup("company_name", ("Company Name", "companyName", "company", "Company")),
    FieldGroup("client_name", ("client_name", "clientName", "client")),
    FieldGroup("client_email", ("email", "client_email", "clientEmail")),
    FieldGroup("users_count", USERS_COUNT_ALIASES, "count"),
    FieldGroup("users_cost", USERS_COST_ALIASES, "money"),
    FieldGroup("duration",
               ("Duration of months", "Suration_of_months", "duration_months", "duration", "months"),
               "duration"),
    FieldGroup("total_price", ("total price", "prices", "total", "price"), "money"),
    FieldGroup("total_after_discount",
               ("total_after_discount", "total_price_discount", "final_total"),
               "money", fallbacks=("total_price", "total", "prices")),
    FieldGroup("migration_cost", ("price_migration", "migration_price", "migration_cost"), "money"),
    FieldGroup("migration_type", ("migration type", "migration"), default="Content"),
    FieldGroup("data_cost", ("price_data", "data_cost"), "money"),
    FieldGroup("per_data_cost", ("per_data_cost", "per_gb_cost", "data_cost_per_gb"), "money"),
    FieldGroup("data_size", ("data_size", "dataSizeGB", "data_size_gb"), "count"),
    FieldGroup("instance_cost", ("instance_cost",), "money"),
    FieldGroup("instance_type", ("instance_type",), default=DEFAULT_INSTANCE_TYPE),
    FieldGroup("number_of_instances",
               ("number_of_instances", "instances", "instance_count"),
               "count", default="1", fallbacks=("instance_users",)),
    FieldGroup("messages",
               ("messages", "message", "message_count", "messages_count", "number_of_messages"),
               "count"),
    FieldGroup("notes", ("notes", "additional_notes", "custom_message")),
    FieldGroup("quote_id", ("quote_id", "quoteId"), default="N/A"),
    FieldGroup("plan_name", ("plan_name", "plan", "tier", "service_tier"), default="Basic"),
    *_combination_groups("content"),
    *_combination_groups("messaging"),
])

# Discount family: when no discount applies every one of these is ""
DISCOUNT_GROUP = FieldGroup("discount", ("discount", "discount_percent", "discount_percentage"), "text")
DISCOUNT_AMOUNT_GROUP = FieldGroup("discount_amount", ("discount_amount",), "text")
DISCOUNT_PASSTHROUGH = (
    "discount_text", "discount_line", "discount_row", "discount_display", "discount_full_line",
)

DATE_ALIASES = ("date", "current_date", "today", "Effective Date", "effective_date")
START_DATE_ALIASES = ("Start_date", "start_date", "project_start_date", "project_start")
END_DATE_ALIASES = ("End_date", "end_date", "project_end_date", "project_end")

PER_USER_ALIASES = ("per_user_cost",)
PER_USER_MONTHLY_ALIASES = ("per_user_monthly_cost", "user_rate", "monthly_user_rate")
INSTANCE_WORD_ALIASES = ("instance_users",)
INSTANCE_TYPE_COST_ALIASES = ("instance_type_cost",)
DATA_SIZE_FLAG_ALIASES = ("include_data_size", "show_data_size")


# -----------------------------
# Value helpers
# -----------------------------
def _scalar(value: Any) -> Optional[str]:
    """Renderable string for a scalar input; None when absent or a sentinel."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return format_date(value)
    s = str(value)
    if s.strip().lower() in _SENTINELS:
        return None
    return s


def _present(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


def parse_amount(value: Any) -> Optional[Decimal]:
    """'$1,234.50' -> Decimal('1234.50'); None if it is not a finite number."""
    if value is None:
        return None
    s = re.sub(r"[\s$,%]", "", str(value))
    if not s:
        return None
    try:
        d = Decimal(s)
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def format_currency(amount: Decimal | float | int) -> str:
    """$1,234.50; amounts too large to quantize come back as "$0.00"."""
    try:
        d = Decimal(str(amount))
        if d.is_finite():
            return f"${d.quantize(Decimal('0.01')):,}"
    except DecimalException:
        pass
    logger.debug("amount %r cannot be formatted as currency", amount)
    return DEFAULT_BY_KIND["money"]


_WORDS_LIMIT = 10 ** 12
_NON_FINITE = re.compile(r"^[+-]?(?:s?nan|inf(?:inity)?)$", re.I)


def number_to_words(num: int) -> str:
    """
    Integer to English words, short scale, up to billions.
    21 -> "Twenty-One", 1005 -> "One Thousand Five".
    """
    units = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine"]
    teens = ["Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
             "Seventeen", "Eighteen", "Nineteen"]
    tens = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]
    scales = [(1_000_000_000, "Billion"), (1_000_000, "Million"), (1_000, "Thousand")]

    if num == 0:
        return "Zero"
    if num < 0:
        return f"Minus {number_to_words(-num)}"

    def below_thousand(n: int) -> str:
        out: List[str] = []
        if n >= 100:
            out += [units[n // 100], "Hundred"]
            n %= 100
        if n >= 20:
            out.append(tens[n // 10] + (f"-{units[n % 10]}" if n % 10 else ""))
        elif n >= 10:
            out.append(teens[n - 10])
        elif n > 0:
            out.append(units[n])
        return " ".join(out)

    for size, label in scales:
        if num >= size:
            head, rest = divmod(num, size)
            words = f"{number_to_words(head)} {label}"
            return f"{words} {number_to_words(rest)}" if rest else words
    return below_thousand(num)


_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d", "%m-%d-%Y", "%B %d, %Y", "%b %d, %Y")


def parse_date(value: Any) -> Optional[datetime.date]:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    # ISO timestamps: keep the calendar date only
    m = re.match(r"^(\d{4}-\d{2}-\d{2})[T ]", s)
    if m:
        s = m.group(1)
    for fmt in _DATE_FORMATS:
        try:
            return datetime.datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def format_date(value: Any) -> str:
    """MM/DD/YYYY, or "N/A" when the value is not a date."""
    d = parse_date(value)
    return d.strftime("%m/%d/%Y") if d else "N/A"


def add_months(d: datetime.date, months: int) -> datetime.date:
    """
    Calendar month arithmetic; the day is clamped to the target month's length.
    Raises ValueError (or OverflowError) when the result is past year 9999.
    """
    y, m = divmod(d.month - 1 + months, 12)
    year, month = d.year + y, m + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return datetime.date(year, month, day)


def is_truthy(value: Any) -> bool:
    """Section/flag truthiness: empty, 0, false, no and N/A are false."""
    if value is None:
        return False
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    s = str(value).strip().lower()
    return s not in ("", "0", "0.0", "false", "no", "n/a", "none")


def discount_is_applied(value: Optional[str]) -> bool:
    return value is not None and value.strip() not in ("", "0") and value.strip().upper() != "N/A"


# -----------------------------
# Resolved table
# -----------------------------
Row = Dict[str, str]


@dataclass
class ResolvedTokens:
    values: Dict[str, str] = field(default_factory=dict)
    collections: Dict[str, List[Any]] = field(default_factory=dict)
    discount_applied: bool = False
    tier: str = ""
    data_size_applicable: bool = True
    _index: Dict[str, str] = field(default_factory=dict, repr=False)

    def set(self, key: str, value: str) -> None:
        for k in spelling_variants(key):
            self.values[k] = value
        self._index[normalize_key(key)] = value

    def lookup(self, name: str) -> Optional[str]:
        """Exact, then trimmed, then spelling-insensitive match. None if unknown."""
        if name in self.values:
            return self.values[name]
        bare = strip_delimiters(name)
        if bare in self.values:
            return self.values[bare]
        return self._index.get(normalize_key(name))

    def get(self, name: str) -> str:
        v = self.lookup(name)
        return v if v is not None else default_for_key(name)

    def collection(self, name: str) -> Optional[List[Any]]:
        return self.collections.get(normalize_key(name))

    def non_empty_count(self) -> int:
        return sum(1 for v in self.values.values() if v and v.strip())


def _flatten(data: Mapping[str, Any]) -> Tuple[List[Tuple[str, Optional[str]]], Dict[str, List[Any]]]:
    """
    Split the record into scalar entries and list-valued collections.
    One level of nested mapping (e.g. a `configuration` object) is merged in
    after the top-level keys, so top-level values win.
    """
    scalars: List[Tuple[str, Optional[str]]] = []
    nested: List[Tuple[str, Optional[str]]] = []
    collections: Dict[str, List[Any]] = {}

    for raw_key, value in (data or {}).items():
        key = strip_delimiters(str(raw_key))
        if not key:
            continue
        if isinstance(value, (list, tuple)):
            collections[normalize_key(key)] = [_row(item) for item in value]
        elif isinstance(value, Mapping):
            for k2, v2 in value.items():
                if isinstance(v2, (list, tuple)):
                    collections.setdefault(normalize_key(str(k2)), [_row(item) for item in v2])
                elif not isinstance(v2, Mapping):
                    nested.append((strip_delimiters(str(k2)), _scalar(v2)))
        else:
            scalars.append((key, _scalar(value)))
    return scalars + nested, collections


def _row(item: Any) -> Any:
    if isinstance(item, Mapping):
        return {strip_delimiters(str(k)): (_scalar(v) or "") for k, v in item.items()
                if not isinstance(v, (list, tuple, Mapping))}
    return _scalar(item) or ""


class _Sources:
    """First non-empty input value per normalized key."""

    def __init__(self, entries: Iterable[Tuple[str, Optional[str]]]):
        self.first: Dict[str, str] = {}
        self.provided: Dict[str, Optional[str]] = {}
        for key, value in entries:
            n = normalize_key(key)
            self.provided.setdefault(n, value)
            if _present(value) and n not in self.first:
                self.first[n] = value  # type: ignore[assignment]

    def pick(self, names: Sequence[str]) -> Optional[str]:
        for name in names:
            v = self.first.get(normalize_key(name))
            if v is not None:
                return v
        return None

    def given(self, names: Sequence[str]) -> bool:
        return any(normalize_key(n) in self.provided for n in names)


def _assign(resolved: ResolvedTokens, names: Iterable[str], value: str) -> None:
    for n in names:
        resolved.set(n, value)


def resolve_tokens(
    data: Mapping[str, Any],
    *,
    today: Optional[datetime.date] = None,
    instance_costs: Optional[Mapping[str, float]] = None,
    no_data_size_types: Sequence[str] = NO_DATA_SIZE_MIGRATION_TYPES,
) -> ResolvedTokens:
    """
    Exhaustive token table for `data`. Keys may be bare or `{{wrapped}}`.
    List values become repeated-block collections.
    """
    today = today or datetime.date.today()
    costs = {k.lower(): v for k, v in (instance_costs or INSTANCE_TYPE_COSTS).items()}

    entries, collections = _flatten(data)
    src = _Sources(entries)
    out = ResolvedTokens(collections=collections)

    # 1) every supplied key under all of its spellings
    for key, value in entries:
        if out.lookup(key) is None or (_present(value) and not _present(out.lookup(key))):
            out.set(key, value if value is not None else "undefined")

    # 2) canonical groups: first non-empty alias wins, visible under all aliases
    for g in FIELD_GROUPS:
        names = (g.name,) + g.aliases
        value = src.pick(names + g.fallbacks)
        if value is None:
            logger.debug("token group %s not supplied; default %r", g.name, g.default_value)
            value = g.default_value
        _assign(out, names, value)

    plan = src.pick(("plan_name", "plan", "tier", "service_tier"))
    out.tier = (plan or "").strip().lower()

    # 3) discount family
    discount = src.pick(DISCOUNT_GROUP.aliases)
    out.discount_applied = discount_is_applied(discount)
    if out.discount_applied:
        pct = discount.strip().rstrip("%").strip()  # type: ignore[union-attr]
        _assign(out, DISCOUNT_GROUP.aliases, discount)  # type: ignore[arg-type]
        _assign(out, DISCOUNT_AMOUNT_GROUP.aliases, src.pick(DISCOUNT_AMOUNT_GROUP.aliases) or "")
        for name in DISCOUNT_PASSTHROUGH:
            out.set(name, src.pick((name,)) or "")
        out.set("discount_percent_only", src.pick(("discount_percent_only",)) or pct)
        out.set("discount_percent_with_parentheses",
                src.pick(("discount_percent_with_parentheses",)) or f"({pct}%)")
        out.set("discount_label", "Discount")
        out.set("show_discount", "true")
        out.set("hide_discount", "")
    else:
        for name in (DISCOUNT_GROUP.aliases + DISCOUNT_AMOUNT_GROUP.aliases + DISCOUNT_PASSTHROUGH
                     + ("discount_percent_only", "discount_percent_with_parentheses",
                        "discount_label", "show_discount")):
            out.set(name, "")
        out.set("hide_discount", "true")

    # 4) derived values
    _resolve_dates(out, src, today)
    _resolve_rates(out, src)
    _resolve_instances(out, src, costs)
    _resolve_data_size_rule(out, src, no_data_size_types)

    # 5) post-pass: nothing unresolved reaches the renderer
    for key, value in list(out.values.items()):
        if value is None or value.strip().lower() in _SENTINELS:
            fixed = default_for_key(key)
            logger.debug("token %r had no usable value; using %r", key, fixed)
            out.values[key] = fixed
    for key, value in list(out._index.items()):
        if value is None or value.strip().lower() in _SENTINELS:
            out._index[key] = default_for_key(key)

    return out


def _resolve_dates(out: ResolvedTokens, src: _Sources, today: datetime.date) -> None:
    doc_date = src.pick(DATE_ALIASES)
    _assign(out, DATE_ALIASES, format_date(doc_date) if doc_date else today.strftime("%m/%d/%Y"))

    start = parse_date(src.pick(START_DATE_ALIASES))
    end = parse_date(src.pick(END_DATE_ALIASES))
    if end is None and start is not None:
        months = parse_amount(out.get("duration"))
        if months is not None and months > 0:
            try:
                end = add_months(start, int(months))
            except (ValueError, OverflowError):
                logger.warning("start %s + %s months is outside the calendar; end date left as N/A",
                               start, months)
            else:
                logger.debug("end date derived from start %s + %s months", start, int(months))

    _assign(out, START_DATE_ALIASES, format_date(start))
    _assign(out, END_DATE_ALIASES, format_date(end))


def _per_unit(cost: Optional[Decimal], *counts: Optional[Decimal]) -> str:
    """cost / product(counts) as currency; "$0.00" when any input is missing or zero."""
    if cost is None or not all(c is not None and c > 0 for c in counts):
        return DEFAULT_BY_KIND["money"]
    try:
        den = Decimal(1)
        for c in counts:
            den *= c
        return format_currency(cost / den)
    except DecimalException:
        return DEFAULT_BY_KIND["money"]


def _resolve_rates(out: ResolvedTokens, src: _Sources) -> None:
    cost = parse_amount(src.pick(USERS_COST_ALIASES))
    users = parse_amount(src.pick(USERS_COUNT_ALIASES))
    months = parse_amount(out.get("duration")) or Decimal(1)

    per_user = src.pick(PER_USER_ALIASES)
    if per_user is None:
        per_user = _per_unit(cost, users)
    _assign(out, PER_USER_ALIASES, per_user)

    monthly = src.pick(PER_USER_MONTHLY_ALIASES)
    if monthly is None:
        monthly = _per_unit(cost, users, months)
    _assign(out, PER_USER_MONTHLY_ALIASES, monthly)


def _resolve_instances(out: ResolvedTokens, src: _Sources, costs: Mapping[str, float]) -> None:
    raw = src.pick(INSTANCE_WORD_ALIASES + ("number_of_instances", "numberOfInstances",
                                            "instances", "instance_count"))
    count = parse_amount(raw)
    if count is not None:
        words = number_to_words(int(count)) if abs(count) < _WORDS_LIMIT else raw.strip()
    elif raw and raw.strip() and not _NON_FINITE.match(raw.strip()):
        words = raw.strip()  # already in words
    else:
        words = number_to_words(1)
    _assign(out, INSTANCE_WORD_ALIASES, words)

    type_cost = src.pick(INSTANCE_TYPE_COST_ALIASES)
    if type_cost is None:
        itype = (out.get("instance_type") or DEFAULT_INSTANCE_TYPE).strip().lower()
        base = costs.get(itype, costs.get(DEFAULT_INSTANCE_TYPE.lower(), 0))
        type_cost = format_currency(base)
    _assign(out, INSTANCE_TYPE_COST_ALIASES, type_cost)


def _resolve_data_size_rule(out: ResolvedTokens, src: _Sources, no_data_size_types: Sequence[str]) -> None:
    flag = src.provided.get(normalize_key("include_data_size"))
    if flag is None:
        flag = src.provided.get(normalize_key("show_data_size"))
    if src.given(DATA_SIZE_FLAG_ALIASES) and flag is not None:
        out.data_size_applicable = is_truthy(flag)
        return
    mtype = normalize_key(out.get("migration_type"))
    out.data_size_applicable = mtype not in {normalize_key(t) for t in no_data_size_types}


__all__ = [
    "FieldGroup",
    "FIELD_GROUPS",
    "ResolvedTokens",
    "resolve_tokens",
    "normalize_key",
    "strip_delimiters",
    "spelling_variants",
    "default_for_key",
    "number_to_words",
    "format_date",
    "parse_date",
    "add_months",
    "format_currency",
    "parse_amount",
    "is_truthy",
    "discount_is_applied",
]
