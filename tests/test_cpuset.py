"""Tests for fusion_vm.utils.cpuset."""

from __future__ import annotations

import pytest

from fusion_vm.exceptions import ConfigurationError
from fusion_vm.utils import format_cpuset, parse_cpuset


class TestFormatCpuset:
    def test_contiguous_range(self):
        assert format_cpuset(range(0, 2)) == "0-1"
        assert format_cpuset(range(0, 16)) == "0-15"

    def test_single_and_gaps(self):
        assert format_cpuset([8, 0, 1, 2, 3, 10, 11]) == "0-3,8,10-11"
        assert format_cpuset([5]) == "5"

    def test_empty_rejected(self):
        with pytest.raises(ConfigurationError):
            format_cpuset([])


class TestParseCpuset:
    def test_systemd_space_separated(self):
        assert parse_cpuset("0-3 8-9") == frozenset({0, 1, 2, 3, 8, 9})

    def test_libvirt_commas(self):
        assert parse_cpuset("0,2,4-5") == frozenset({0, 2, 4, 5})

    def test_empty_means_no_cpus(self):
        assert parse_cpuset("") == frozenset()

    @pytest.mark.parametrize("text", ["a-b", "3-1", "0-", "x"])
    def test_invalid(self, text):
        with pytest.raises(ConfigurationError):
            parse_cpuset(text)

    def test_inverse_of_format(self):
        cpus = {0, 1, 2, 7, 9, 10, 11}
        assert parse_cpuset(format_cpuset(cpus)) == frozenset(cpus)
