"""
Module to validate values in a loaded config
"""

# Standard
from typing import Any, Callable, Dict, List, Optional
import builtins

# First Party
import aconfig
import alog

# Local
from .. import constants

log = alog.use_channel("CONFG")

# A checker takes the value and the remaining rule args and returns validity
_CHECKER_TYPE = Callable[..., bool]


################################################################################
## Public ######################################################################
################################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding validation setup

    Returns:
        invalid_params:  List[str]
            A list of all string keys for parameters that fail validation
    """
    invalid_params = []
    for val_key, rule in _parse_validation_config(validation_config).items():
        if not validate_value(_nested_get(config, val_key), **rule):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


def validate_value(value: Any, type: str, optional: bool = False, **kwargs) -> bool:
    """Validate a single value against a single rule

    Args:
        value:  Any
            The value read from the config
        type:  str
            The key of the rule type (int, float, number, str, bool, list, enum)
        optional:  bool
            If true, None is always valid
        **kwargs:
            Rule specific bounds (min, max, min_len, max_len, item_type, values)

    Returns:
        valid:  bool
            True if the value satisfies the rule
    """
    # pylint: disable=redefined-builtin
    if optional and value is None:
        return True
    checker = _CHECKERS.get(type)
    if checker is None:
        log.warning("Unknown validation type [%s]", type)
        return False
    valid = checker(value, **kwargs)
    if not valid:
        log.debug("Invalid value [%s] for type [%s]", value, type)
    return valid


################################################################################
## Implementation ##############################################################
################################################################################


def _is_number(value: Any, number_types=(int, float)) -> bool:
    # bool is a subclass of int, but never a valid number here
    return isinstance(value, number_types) and not isinstance(value, bool)


def _in_bounds(value, lower, upper) -> bool:
    return (lower is None or value >= lower) and (upper is None or value <= upper)


def _check_number(value, min=None, max=None, number_types=(int, float)) -> bool:
    # pylint: disable=redefined-builtin
    return _is_number(value, number_types) and _in_bounds(value, min, max)


def _check_int(value, **kwargs) -> bool:
    return _check_number(value, number_types=(int,), **kwargs)


def _check_float(value, **kwargs) -> bool:
    return _check_number(value, number_types=(float,), **kwargs)


def _check_str(value, min_len=None, max_len=None) -> bool:
    return isinstance(value, str) and _in_bounds(len(value), min_len, max_len)


def _check_bool(value) -> bool:
    return isinstance(value, bool)


def _check_enum(value, values: List[Any]) -> bool:
    return value in values


def _check_list(
    value,
    min_len: Optional[int] = None,
    max_len: Optional[int] = None,
    item_type: Optional[str] = None,
) -> bool:
    if not isinstance(value, list) or not _in_bounds(len(value), min_len, max_len):
        return False
    if item_type is None:
        return True
    item_class = getattr(builtins, item_type, None)
    assert isinstance(item_class, type), f"Unsupported item_type: {item_type}"
    return all(isinstance(item, item_class) for item in value)


_CHECKERS: Dict[str, _CHECKER_TYPE] = {
    "number": _check_number,
    "int": _check_int,
    "float": _check_float,
    "str": _check_str,
    "bool": _check_bool,
    "enum": _check_enum,
    "list": _check_list,
}


def _nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Get a value out of a dict using 'foo.bar' key notation"""
    for part in key.split(constants.NESTED_DICT_DELIM):
        if not isinstance(dct, dict) or part not in dct:
            return dflt
        dct = dct[part]
    return dct


def _parse_validation_config(
    validation_config: dict,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, dict]:
    """Recursively flatten the validation file into a dict of nested keys
    pointing to the rule args for that key
    """
    output_dict = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        assert isinstance(key, str), "Only string keys allowed!"
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        nested_key = constants.NESTED_DICT_DELIM.join(key_parts)
        if isinstance(val.get("type"), str) and val["type"] in _CHECKERS:
            log.debug3("Found parameter at %s: %s", nested_key, val)
            output_dict[nested_key] = dict(val)
        else:
            log.debug3("Recursing into %s", nested_key)
            output_dict.update(_parse_validation_config(val, key_parts))
    return output_dict
