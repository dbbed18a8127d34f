import hashlib
import jsonpickle
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, OrderedDict


def now() -> str:
    return datetime.now(timezone.utc).isoformat()


def md5_hex(value: str) -> str:
    """Hex encoded MD5 digest of a string, used for label safe identifiers."""
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def ordered_dict_to_dict(data):
    """
    Recursively convert OrderedDict instances to regular dict instances.
    Handles nested structures including lists and tuples.
    """
    if isinstance(data, (OrderedDict, dict)):
        return {k: ordered_dict_to_dict(v) for k, v in data.items()}
    elif isinstance(data, (list, tuple)):
        converted = [ordered_dict_to_dict(item) for item in data]
        return converted if isinstance(data, list) else tuple(converted)
    else:
        return data


def sort_dict_keys(d):
    """Recursively sort dictionary keys and handle nested structures.

    Args:
        d: Data structure (dict, list, or primitive type)

    Returns:
        Sorted version of the data structure
    """
    if isinstance(d, dict):
        return {key: sort_dict_keys(value) for key, value in sorted(d.items())}
    elif isinstance(d, list):
        return [sort_dict_keys(item) for item in d]
    else:
        return d


def canonicalize_dict(data):
    """
    Returns a canonical JSON representation of a dictionary.

    The JSON string uses sorted keys, which ensures that the representation of
    the dictionary remains consistent even when key order varies.
    """
    return jsonpickle.dumps(sort_dict_keys(data), unpicklable=False)


def find_condition(conds: Optional[List[Dict]], type: str) -> Optional[Dict]:
    for c in conds or []:
        if c.get("type") == type:
            return c
    return None


def is_condition_true(conds: Optional[List[Dict]], type: str) -> bool:
    c = find_condition(conds, type)
    return c is not None and c.get("status") == "True"


def upsert_condition(conds, newc):
    """In-memory merge by .type. Only bump lastTransitionTime when status flips."""
    conds = list(conds or [])
    for i, c in enumerate(conds):
        if c.get("type") == newc["type"]:
            ltt = c.get("lastTransitionTime") or now()
            if c.get("status") != newc["status"]:
                ltt = now()
            merged = {**c, **newc, "lastTransitionTime": ltt}
            conds[i] = merged
            break
    else:
        conds.append({**newc, "lastTransitionTime": now()})
    return conds


def deep_compare_dict(data1: Any, data2: Any) -> bool:
    """Compare two data structures deeply, ignoring key order.

    Args:
        data1: First data structure (dict, list, or nested combination)
        data2: Second data structure (dict, list, or nested combination)

    Returns:
        True if data structures are equivalent, False otherwise
    """
    if data1 is None and data2 is None:
        return True
    if data1 is None or data2 is None:
        return False

    if not isinstance(data1, type(data2)) and not isinstance(data2, type(data1)):
        return False

    try:
        json1 = jsonpickle.dumps(sort_dict_keys(data1), unpicklable=False)
        json2 = jsonpickle.dumps(sort_dict_keys(data2), unpicklable=False)
        return json1 == json2
    except (TypeError, ValueError):
        return data1 == data2
