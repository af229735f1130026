# storefront/utils.py
import re
import secrets
import time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple, Union

FIAT_PLACES = Decimal("0.01")
CRYPTO_PLACES = Decimal("0.00000001")

_SUFFIX_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_decimal(value: Union[int, float, str, Decimal]) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"Not a price: {value!r}")
    try:
        # str() so that floats like 19.99 keep their shortest repr
        d = Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Not a price: {value!r}") from None
    if not d.is_finite():
        raise ValueError(f"Not a price: {value!r}")
    return d


def quantize_fiat(value) -> Decimal:
    return _to_decimal(value).quantize(FIAT_PLACES, rounding=ROUND_HALF_UP)


def quantize_crypto(value) -> Decimal:
    return _to_decimal(value).quantize(CRYPTO_PLACES, rounding=ROUND_HALF_UP)


def format_price(price: Union[int, float, str, Decimal]) -> str:
    """USD display string: 19.5 -> "$19.50", -5 -> "-$5.00", 1234.5 -> "$1,234.50"."""
    amount = quantize_fiat(price)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def generate_order_number() -> str:
    """ORD-<epoch millis>-<9 uppercase alphanumerics>.

    Not checked for uniqueness here; orders.order_number is a unique column.
    """
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"ORD-{millis}-{suffix}"


def truncate_address(address: str, chars: int = 8) -> str:
    return f"{address[:chars]}...{address[-4:]}"


def _flatten_classes(value: Any, out: List[str]) -> None:
    if not value:
        return
    if isinstance(value, str):
        out.extend(value.split())
    elif isinstance(value, dict):
        for name, enabled in value.items():
            if enabled:
                out.extend(str(name).split())
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            _flatten_classes(item, out)
    else:
        out.append(str(value))


# Tailwind utility groups, first match wins. Classes in one group set the same
# CSS property, so only the last one of a group survives a merge.
_GROUP_PATTERNS: List[Tuple[str, str]] = [
    ("display", r"block|inline-block|inline|flex|inline-flex|grid|inline-grid|table|table-row|table-cell"
                r"|contents|flow-root|list-item|hidden"),
    ("position", r"static|fixed|absolute|relative|sticky"),
    ("visibility", r"visible|invisible|collapse"),
    ("text-overflow", r"truncate|text-ellipsis|text-clip"),
    ("text-decoration", r"underline|overline|line-through|no-underline"),
    ("text-transform", r"uppercase|lowercase|capitalize|normal-case"),
    ("font-style", r"italic|not-italic"),
    ("font-size", r"text-(xs|sm|base|lg|xl|[2-9]xl)"),
    ("text-align", r"text-(left|center|right|justify|start|end)"),
    ("text-color", r"text-.+"),
    ("font-weight", r"font-(thin|extralight|light|normal|medium|semibold|bold|extrabold|black)"),
    ("font-family", r"font-.+"),
    ("leading", r"leading-.+"),
    ("tracking", r"tracking-.+"),
    ("whitespace", r"whitespace-.+"),
]
_GROUP_PATTERNS += [(g, g + r"-.+") for g in (
    "p", "px", "py", "ps", "pe", "pt", "pr", "pb", "pl",
    "m", "mx", "my", "ms", "me", "mt", "mr", "mb", "ml",
    "space-x", "space-y",
    "w", "h", "size", "min-w", "max-w", "min-h", "max-h",
)]
_GROUP_PATTERNS += [
    ("bg-attachment", r"bg-(fixed|local|scroll)"),
    ("bg-size", r"bg-(auto|cover|contain)"),
    ("bg-position", r"bg-(bottom|center|left|left-bottom|left-top|right|right-bottom|right-top|top)"),
    ("bg-repeat", r"bg-(no-repeat|repeat|repeat-x|repeat-y|repeat-round|repeat-space)"),
    ("bg-image", r"bg-(none|gradient-to-(t|tr|r|br|b|bl|l|tl))"),
    ("bg-color", r"bg-.+"),
    ("border-style", r"border-(solid|dashed|dotted|double|hidden|none)"),
]
_GROUP_PATTERNS += [(f"border-w-{s}", rf"border-{s}(-\d+)?") for s in ("x", "y", "s", "e", "t", "r", "b", "l")]
_GROUP_PATTERNS += [
    ("border-w", r"border(-\d+)?"),
    ("border-color", r"border-.+"),
]
_GROUP_PATTERNS += [(f"rounded-{s}", rf"rounded-{s}(-.+)?") for s in (
    "tl", "tr", "br", "bl", "ss", "se", "ee", "es", "t", "r", "b", "l", "s", "e",
)]
_GROUP_PATTERNS += [
    ("rounded", r"rounded(-.+)?"),
    ("shadow", r"shadow(-.+)?"),
    ("ring-offset", r"ring-offset-.+"),
    ("ring-w", r"ring(-\d+)?"),
    ("ring-color", r"ring-.+"),
    ("opacity", r"opacity-.+"),
    ("z", r"z-.+"),
    ("gap-x", r"gap-x-.+"),
    ("gap-y", r"gap-y-.+"),
    ("gap", r"gap-.+"),
    ("inset-x", r"inset-x-.+"),
    ("inset-y", r"inset-y-.+"),
    ("inset", r"inset-.+"),
    ("top", r"top-.+"),
    ("right", r"right-.+"),
    ("bottom", r"bottom-.+"),
    ("left", r"left-.+"),
    ("justify-content", r"justify-(normal|start|end|center|between|around|evenly|stretch)"),
    ("align-items", r"items-(start|end|center|baseline|stretch)"),
    ("align-content", r"content-(normal|center|start|end|between|around|evenly|baseline|stretch)"),
    ("align-self", r"self-(auto|start|end|center|stretch|baseline)"),
    ("flex-direction", r"flex-(row|row-reverse|col|col-reverse)"),
    ("flex-wrap", r"flex-(wrap|wrap-reverse|nowrap)"),
    ("flex", r"flex-(1|auto|initial|none|\[.+\])"),
    ("grow", r"grow(-.+)?"),
    ("shrink", r"shrink(-.+)?"),
    ("grid-cols", r"grid-cols-.+"),
    ("grid-rows", r"grid-rows-.+"),
    ("col", r"col-(auto|span-.+)"),
    ("row", r"row-(auto|span-.+)"),
    ("overflow-x", r"overflow-x-.+"),
    ("overflow-y", r"overflow-y-.+"),
    ("overflow", r"overflow-.+"),
    ("object-fit", r"object-(contain|cover|fill|none|scale-down)"),
    ("aspect", r"aspect-.+"),
    ("cursor", r"cursor-.+"),
    ("user-select", r"select-(none|text|all|auto)"),
    ("pointer-events", r"pointer-events-(none|auto)"),
    ("transition", r"transition(-.+)?"),
    ("duration", r"duration-.+"),
    ("ease", r"ease-.+"),
    ("delay", r"delay-.+"),
    ("translate-x", r"translate-x-.+"),
    ("translate-y", r"translate-y-.+"),
    ("rotate", r"rotate-.+"),
    ("scale-x", r"scale-x-.+"),
    ("scale-y", r"scale-y-.+"),
    ("scale", r"scale-.+"),
]
_CLASS_GROUPS = [(group, re.compile(pattern)) for group, pattern in _GROUP_PATTERNS]

# a later class of the key group also overrides these narrower groups
_CONFLICTS: Dict[str, Tuple[str, ...]] = {
    "p": ("px", "py", "ps", "pe", "pt", "pr", "pb", "pl"),
    "px": ("pr", "pl"),
    "py": ("pt", "pb"),
    "m": ("mx", "my", "ms", "me", "mt", "mr", "mb", "ml"),
    "mx": ("mr", "ml"),
    "my": ("mt", "mb"),
    "size": ("w", "h"),
    "font-size": ("leading",),
    "border-w": ("border-w-x", "border-w-y", "border-w-s", "border-w-e",
                 "border-w-t", "border-w-r", "border-w-b", "border-w-l"),
    "border-w-x": ("border-w-r", "border-w-l"),
    "border-w-y": ("border-w-t", "border-w-b"),
    "rounded": ("rounded-t", "rounded-r", "rounded-b", "rounded-l", "rounded-s", "rounded-e",
                "rounded-tl", "rounded-tr", "rounded-br", "rounded-bl",
                "rounded-ss", "rounded-se", "rounded-ee", "rounded-es"),
    "rounded-t": ("rounded-tl", "rounded-tr"),
    "rounded-r": ("rounded-tr", "rounded-br"),
    "rounded-b": ("rounded-br", "rounded-bl"),
    "rounded-l": ("rounded-tl", "rounded-bl"),
    "rounded-s": ("rounded-ss", "rounded-es"),
    "rounded-e": ("rounded-se", "rounded-ee"),
    "gap": ("gap-x", "gap-y"),
    "inset": ("inset-x", "inset-y", "top", "right", "bottom", "left"),
    "inset-x": ("right", "left"),
    "inset-y": ("top", "bottom"),
    "overflow": ("overflow-x", "overflow-y"),
    "scale": ("scale-x", "scale-y"),
}


def _split_modifiers(token: str) -> Tuple[Tuple[str, ...], bool, str]:
    """hover:md:!p-2 -> (("hover", "md"), True, "p-2"). Colons inside [...] are kept."""
    variants = []
    depth = start = 0
    for i, ch in enumerate(token):
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        elif ch == ":" and depth == 0:
            variants.append(token[start:i])
            start = i + 1
    base = token[start:]
    important = base.startswith("!") or base.endswith("!")
    return tuple(sorted(variants)), important, base.strip("!")


def _class_group(base: str) -> Optional[str]:
    name = base[1:] if base.startswith("-") else base
    for group, pattern in _CLASS_GROUPS:
        if pattern.fullmatch(name):
            return group
    return None


def cn(*inputs: Any) -> str:
    """Merge class names the way clsx + tailwind-merge do.

    Falsy inputs drop out, dicts contribute their truthy keys, and when two
    Tailwind utilities set the same property under the same variants the later
    one wins: cn("p-2", "p-4") == "p-4", cn("px-2", "p-4") == "p-4".
    Unknown classes are only de-duplicated.
    """
    tokens: List[str] = []
    _flatten_classes(inputs, tokens)

    taken = set()
    kept: List[str] = []
    for token in reversed(tokens):
        variants, important, base = _split_modifiers(token)
        group = _class_group(base)
        if group is None:
            key = ("class", token)
            if key in taken:
                continue
            taken.add(key)
        else:
            key = (variants, important, group)
            if key in taken:
                continue
            taken.add(key)
            for narrower in _CONFLICTS.get(group, ()):
                taken.add((variants, important, narrower))
        kept.append(token)
    return " ".join(reversed(kept))
