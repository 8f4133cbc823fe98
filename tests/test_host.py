"""Tests for host probing and reclamation."""

from unittest.mock import MagicMock, patch

import psutil
import pytest

from perfwatch.core.host import ProcessProbe, gc_reclaim, reclaim
from perfwatch.errors import UnsupportedReclamation


class TestProcessProbe:
    def test_real_process(self):
        metrics = ProcessProbe()()
        assert metrics.heap_used_bytes > 0
        assert metrics.heap_limit_bytes >= metrics.heap_used_bytes
        assert metrics.cpu_percent >= 0

    @patch("perfwatch.core.host.psutil.Process")
    def test_reads_rss_and_cpu(self, mock_process_cls):
        proc = MagicMock()
        proc.memory_info.return_value = MagicMock(rss=50 * 1024 * 1024)
        proc.cpu_percent.return_value = 12.345
        proc.rlimit.side_effect = psutil.AccessDenied(1234)
        mock_process_cls.return_value = proc

        metrics = ProcessProbe(pid=1234)()
        assert metrics.heap_used_bytes == 50 * 1024 * 1024
        assert metrics.cpu_percent == 12.3
        assert metrics.heap_limit_bytes == psutil.virtual_memory().total

    @patch("perfwatch.core.host.psutil.Process")
    def test_vanished_process(self, mock_process_cls):
        proc = MagicMock()
        proc.memory_info.side_effect = psutil.NoSuchProcess(1234)
        mock_process_cls.return_value = proc

        metrics = ProcessProbe(pid=1234)()
        assert metrics.heap_used_bytes == 0
        assert metrics.heap_limit_bytes == 0

    @patch("perfwatch.core.host.psutil.Process")
    def test_access_denied(self, mock_process_cls):
        proc = MagicMock()
        proc.memory_info.side_effect = psutil.AccessDenied(1234)
        mock_process_cls.return_value = proc

        assert ProcessProbe(pid=1234)().cpu_percent == 0.0


class TestReclaim:
    def test_gc_reclaim_returns_count(self):
        assert gc_reclaim() >= 0

    def test_reclaim_calls_capability(self):
        assert reclaim(lambda: 7) == 7

    def test_no_capability_raises(self):
        with pytest.raises(UnsupportedReclamation):
            reclaim(None)
