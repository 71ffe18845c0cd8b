#
import re
from functools import _lru_cache_wrapper
from itertools import islice
from typing import Any, Callable, Iterable, Iterator, List, Union

_CAMEL_ACRONYM = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_WORD = re.compile(r"([a-z0-9])([A-Z])")


class ClassPropertyDescriptor:
    """
    ClassPropertyDescriptor
    """

    def __init__(self, fget: classmethod, fset: None = None) -> None:
        self.fget = fget
        self.fset = fset

    def __get__(self, obj, klass=None):
        if klass is None:
            klass = type(obj)
        return self.fget.__get__(obj, klass)()

    def __set__(self, obj, value):
        raise AttributeError("can't set attribute")


def classproperty(func: Union[Callable, _lru_cache_wrapper]) -> ClassPropertyDescriptor:
    """
    classproperty
    """
    if not isinstance(func, (classmethod, staticmethod)):
        func = classmethod(func)

    return ClassPropertyDescriptor(func)


def kebab_case(name: str) -> str:
    """
    ProductCategory => product-category, HTTPLog => http-log
    """
    name = _CAMEL_ACRONYM.sub(r"\1-\2", name)
    name = _CAMEL_WORD.sub(r"\1-\2", name)
    return name.replace("_", "-").lower()


def chunked(items: Iterable[Any], size: int) -> Iterator[List[Any]]:
    """
    Yield successive lists of at most `size` items
    """
    if size < 1:
        raise ValueError("chunk size must be positive")
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def unique(items: Iterable[Any]) -> List[Any]:
    """
    :return: the items without duplicates, in their original order
    """
    result = []
    seen = set()
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result
