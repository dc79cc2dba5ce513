"""
Тесты таймеров для измерения производительности.
"""

import time
import pytest
from coreset_kmeans.metrics.timers import PhaseTimings, Timer


class TestTimer:
    """Тесты контекстного менеджера Timer."""

    def test_timer_basic(self):
        """Базовый тест работы таймера."""
        with Timer() as t:
            time.sleep(0.1)

        # Проверяем, что время измерено
        assert t.elapsed > 0
        assert t.elapsed >= 0.1
        assert t.start > 0
        assert t.end > t.start

    def test_timer_elapsed_property(self):
        """Тест свойства elapsed."""
        with Timer() as t:
            time.sleep(0.05)

        # elapsed должен быть равен разности end - start
        assert abs(t.elapsed - (t.end - t.start)) < 1e-6

    def test_timer_multiple_uses(self):
        """Тест использования таймера несколько раз."""
        timer = Timer()

        with timer:
            time.sleep(0.05)

        elapsed1 = timer.elapsed

        # Второе использование должно перезаписать значения
        with timer:
            time.sleep(0.05)

        elapsed2 = timer.elapsed

        # Оба измерения должны быть положительными
        assert elapsed1 > 0
        assert elapsed2 > 0

    def test_timer_nested(self):
        """Тест вложенных таймеров."""
        with Timer() as outer:
            time.sleep(0.05)
            with Timer() as inner:
                time.sleep(0.02)

        # Внешний таймер должен измерить больше времени
        assert outer.elapsed > inner.elapsed
        assert outer.elapsed >= 0.07



class TestPhaseTimings:
    """Тесты накопителя таймингов по фазам."""

    def test_add_accumulates(self):
        """Повторные add суммируются в одной фазе."""
        timings = PhaseTimings()
        timings.add("assign", 0.5)
        timings.add("assign", 0.25)
        timings.add("update", 1.0)

        assert timings.t_assign == pytest.approx(0.75)
        assert timings.t_update == pytest.approx(1.0)
        assert timings.t_iter == pytest.approx(1.75)
        assert timings.t_coreset == 0.0

    def test_unknown_phase(self):
        """Неизвестная фаза — KeyError."""
        with pytest.raises(KeyError):
            PhaseTimings().add("gpu", 1.0)

    def test_as_dict(self):
        """as_dict содержит все фазы."""
        timings = PhaseTimings()
        timings.add("coreset", 2.0)
        data = timings.as_dict()

        assert set(data) == {"t_coreset", "t_seeding", "t_assign", "t_update", "t_total"}
        assert data["t_coreset"] == 2.0

    def test_with_timer(self):
        """Время из Timer прибавляется к фазе."""
        timings = PhaseTimings()
        with Timer() as t:
            time.sleep(0.01)
        timings.add("seeding", t.elapsed)

        assert timings.t_seeding >= 0.01
