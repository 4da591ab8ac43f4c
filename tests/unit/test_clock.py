"""Unit tests for the scheduling clock."""
import runpy
from datetime import date, datetime
from pathlib import Path

import pytest

from scheduling.clock import Clock, FixedClock, SystemClock

DOCS_CONF = Path(__file__).resolve().parents[2] / "docs" / "source" / "conf.py"


def test_clock_is_abstract():
    with pytest.raises(TypeError):
        Clock()


def test_fixed_clock_localizes_naive_instants():
    clock = FixedClock(datetime(2030, 1, 7, 23, 30))

    assert clock.now().tzinfo is not None
    assert str(clock.now().tzinfo) == "Asia/Dhaka"
    assert clock.today() == date(2030, 1, 7)

    clock.set(datetime(2030, 1, 8, 0, 15))
    assert clock.today() == date(2030, 1, 8)


def test_system_clock_uses_configured_zone():
    assert str(SystemClock("Asia/Dhaka").now().tzinfo) == "Asia/Dhaka"


def test_docs_copyright_year_is_not_in_the_future():
    conf = runpy.run_path(str(DOCS_CONF))

    assert int(conf["copyright"][:4]) <= date.today().year
