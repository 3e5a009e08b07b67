"""Conversion of mswell records to and from plain data for output and restart."""

import typing

import cattrs
import numpy as np

from mswell._precision import get_dtype
from mswell.errors import DeserializationError, SerializationError


__all__ = ["converter", "dump", "load"]

T = typing.TypeVar("T")

converter = cattrs.Converter()


def unstructure_array(value: np.ndarray) -> typing.List[typing.Any]:
    return value.tolist()


def structure_array(value: typing.Any, typ: typing.Any) -> np.ndarray:
    return np.asarray(value, dtype=get_dtype())


converter.register_unstructure_hook(np.ndarray, unstructure_array)
converter.register_structure_hook(np.ndarray, structure_array)


def dump(o: typing.Any, /) -> typing.Dict[str, typing.Any]:
    """
    Dump an attrs record to a dictionary of plain Python values.

    :raises SerializationError: If the record cannot be unstructured.
    """
    try:
        return converter.unstructure(o)
    except Exception as exc:
        raise SerializationError(
            f"Failed to dump object of type {type(o).__name__!r}"
        ) from exc


def load(cls: typing.Type[T], data: typing.Mapping[str, typing.Any]) -> T:
    """
    Load an attrs record of type `cls` from a dictionary.

    Attribute converters and validators of `cls` run as usual.

    :raises DeserializationError: If the data does not describe a valid `cls`.
    """
    try:
        return converter.structure(data, cls)
    except Exception as exc:
        raise DeserializationError(
            f"Failed to load object of type {cls.__name__!r}"
        ) from exc
