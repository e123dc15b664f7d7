"""Sensor attribute to time series conversion module.

This module handles:
- Interpreting SmartThings device attributes as numeric values
- Rejecting attribute values that don't match their expected shape
- Formatting each accepted attribute as a textfile collector line

Line format:
    smartthings_sensors{id="<device id>" name="<display name>" attr="<attribute>"} = <value>

Attributes not listed in ATTRIBUTE_RULES are ignored.
"""

from typing import Any, Callable, Dict, List, Mapping, Tuple

METRIC_NAME = "smartthings_sensors"

# Two-valued attributes: first option maps to 0.0, second to 1.0
OPEN_CLOSED = ("open", "closed")
INACTIVE_ACTIVE = ("inactive", "active")
ABSENT_PRESENT = ("absent", "present")
OFF_ON = ("off", "on")


class SensorValueError(ValueError):
    """Exception raised when an attribute value can't be interpreted.

    Attributes:
        value: The offending raw value
        attribute: Attribute name, once known
        device_id: Device the attribute belongs to, once known
    """

    def __init__(self, message: str, value: Any = None, attribute: str = "", device_id: str = ""):
        super().__init__(message)
        self.value = value
        self.attribute = attribute
        self.device_id = device_id


def value_clear(value: Any) -> float:
    """Interpret a "clear" style alarm attribute.

    Args:
        value: Raw attribute value

    Returns:
        0.0 for "clear", 1.0 for any other string

    Raises:
        SensorValueError: If the value is not a string

    Example:
        >>> value_clear("clear")
        0.0
        >>> value_clear("detected")
        1.0
    """
    if not isinstance(value, str):
        raise SensorValueError(f"invalid non-string argument {value!r}", value)
    return 0.0 if value == "clear" else 1.0


def value_one_of(value: Any, options: Tuple[str, str]) -> float:
    """Interpret a two-valued attribute.

    Args:
        value: Raw attribute value
        options: Pair of accepted strings, in (0.0, 1.0) order

    Returns:
        0.0 if value matches options[0], 1.0 if it matches options[1]

    Raises:
        SensorValueError: For non-strings or anything outside options
    """
    if not isinstance(value, str):
        raise SensorValueError(f"invalid non-string argument {value!r}", value)
    if value == options[0]:
        return 0.0
    if value == options[1]:
        return 1.0
    raise SensorValueError(
        f"invalid option {value!r}. Expected {options[0]!r} or {options[1]!r}", value
    )


def value_float(value: Any) -> float:
    """Pass a numeric attribute through as a float.

    Strings are rejected even when they look numeric.

    Raises:
        SensorValueError: If the value is not an int or float
    """
    # bool is an int subclass but never a sensor reading
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SensorValueError(f"invalid non floating-point argument {value!r}", value)
    try:
        return float(value)
    except OverflowError:
        raise SensorValueError(f"value out of floating-point range {value!r}", value)


def _one_of(options: Tuple[str, str]) -> Callable[[Any], float]:
    return lambda value: value_one_of(value, options)


ATTRIBUTE_RULES: Dict[str, Callable[[Any], float]] = {
    "alarmState": value_clear,
    "battery": value_float,
    "carbonMonoxide": value_clear,
    "contact": _one_of(OPEN_CLOSED),
    "energy": value_float,
    "motion": _one_of(INACTIVE_ACTIVE),
    "power": value_float,
    "presence": _one_of(ABSENT_PRESENT),
    "smoke": value_clear,
    "switch": _one_of(OFF_ON),
    "temperature": value_float,
}


def escape_label(value: str) -> str:
    """Escape a label value the way the Prometheus text format does."""
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def format_line(device_id: str, device_name: str, attribute: str, value: float) -> str:
    """Format one metric line.

    Example:
        >>> format_line("d1", "Door", "contact", 0.0)
        'smartthings_sensors{id="d1" name="Door" attr="contact"} = 0.0'
    """
    return (
        f'{METRIC_NAME}{{id="{escape_label(device_id)}" '
        f'name="{escape_label(device_name)}" '
        f'attr="{escape_label(attribute)}"}} = {value}'
    )


def get_time_series(
    device_id: str,
    device_name: str,
    attributes: Mapping[str, Any],
) -> List[str]:
    """Convert one device's attributes into metric lines.

    Args:
        device_id: SmartThings device identifier
        device_name: Device display name
        attributes: Attribute name to raw value (None, str or number)

    Returns:
        One line per recognized attribute, in attribute iteration order

    Raises:
        SensorValueError: On the first attribute that can't be interpreted.
            Nothing is returned for the device in that case.
    """
    lines = []

    for attribute, raw in attributes.items():
        rule = ATTRIBUTE_RULES.get(attribute)
        if rule is None:
            continue

        # Some sensors report null instead of an empty string
        if raw is None:
            raw = ""

        try:
            value = rule(raw)
        except SensorValueError as e:
            e.attribute = attribute
            e.device_id = device_id
            raise

        lines.append(format_line(device_id, device_name, attribute, value))

    return lines


def device_time_series(device) -> List[str]:
    """Convert a smartthings.Device into metric lines."""
    return get_time_series(device.id, device.display_name, device.attributes)


if __name__ == "__main__":
    # Unit tests
    import sys

    def test_value_clear():
        """Test clear sentinel attributes."""
        print("Testing value_clear...", end=" ")

        assert value_clear("clear") == 0.0
        assert value_clear("detected") == 1.0
        assert value_clear("") == 1.0

        try:
            value_clear(3.5)
            assert False, "Should have raised SensorValueError"
        except SensorValueError:
            pass

        print("OK")

    def test_value_one_of():
        """Test two-valued attributes."""
        print("Testing value_one_of...", end=" ")

        assert value_one_of("off", OFF_ON) == 0.0
        assert value_one_of("on", OFF_ON) == 1.0

        try:
            value_one_of("ON", OFF_ON)
            assert False, "Should have raised SensorValueError"
        except SensorValueError as e:
            assert "'off'" in str(e) and "'on'" in str(e)

        print("OK")

    def test_value_float():
        """Test numeric attributes."""
        print("Testing value_float...", end=" ")

        assert value_float(87.5) == 87.5
        assert value_float(20) == 20.0

        for bad in ("87.5", True, None, []):
            try:
                value_float(bad)
                assert False, f"Should have raised SensorValueError for {bad!r}"
            except SensorValueError:
                pass

        print("OK")

    def test_get_time_series():
        """Test a door sensor with an unknown attribute."""
        print("Testing get_time_series...", end=" ")

        lines = get_time_series("d1", "Door", {"contact": "open", "battery": 87.5, "foo": "bar"})
        assert sorted(lines) == [
            'smartthings_sensors{id="d1" name="Door" attr="battery"} = 87.5',
            'smartthings_sensors{id="d1" name="Door" attr="contact"} = 0.0',
        ], lines

        print("OK")

    print("=" * 60)
    print("Collector Unit Tests")
    print("=" * 60)

    tests = [
        test_value_clear,
        test_value_one_of,
        test_value_float,
        test_get_time_series,
    ]

    failed = 0
    for test in tests:
        try:
            test()
        except Exception as e:
            print(f"FAILED: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print("=" * 60)
    if failed:
        print(f"FAILED: {failed} test(s)")
        sys.exit(1)
    else:
        print("All tests passed!")
        sys.exit(0)
