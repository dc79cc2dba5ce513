"""
Иерархия исключений пакета.

- ConfigurationError: некорректные параметры, запуск не начинается;
- PreconditionError: нарушено предусловие прогона (размерности, длины массивов);
- WindowAccessError: запись в строку окна, которой процесс не владеет;
- CoordinationError: сбой группы процессов (сломанный барьер, упавший воркер).
"""

from __future__ import annotations


class CoresetKMeansError(Exception):
    """Базовое исключение пакета."""


class ConfigurationError(CoresetKMeansError, ValueError):
    """Некорректная конфигурация: отклоняется до начала вычислений."""


class PreconditionError(CoresetKMeansError, ValueError):
    """
    Нарушено предусловие прогона.

    Атрибут ``check`` содержит имя проверки, которая не прошла
    (например, ``feature_dimension`` или ``assignment_length``).
    """

    def __init__(self, check: str, message: str) -> None:
        # args=(check, message), чтобы исключение переживало pickle между процессами
        super().__init__(check, message)
        self.check = check
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} [check={self.check}]"


class WindowAccessError(CoresetKMeansError, RuntimeError):
    """Запись в строку разделяемого окна, принадлежащую другому процессу."""


class CoordinationError(CoresetKMeansError, RuntimeError):
    """Сбой координации процессов: вычисление падает целиком."""
