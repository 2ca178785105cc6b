"""
APM Rollup Test Configuration and Fixtures
==========================================
Shared fixtures and configuration for all tests.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator, List, Tuple

from apmrollup.core.config import RollupConfig
from apmrollup.profile.frames import StackFrame, ThreadState
from apmrollup.profile.tree import MutableProfileTree


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    path = Path(tempfile.mkdtemp(prefix="apmrollup_test_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def sample_config() -> dict:
    """Sample configuration dictionary."""
    return {
        "rollup": {
            "max_queries_per_type": 2,
            "max_service_calls_per_type": 3,
            "histogram_max_exact_values": 8,
            "profile_min_samples": 2,
        }
    }


@pytest.fixture
def small_config() -> RollupConfig:
    """Config with tiny limits so bounding and conversion kick in quickly."""
    return RollupConfig(
        max_queries_per_type=2,
        max_service_calls_per_type=2,
        histogram_max_exact_values=8,
    )


def make_stack(*methods: str, cls: str = "com.example.Service") -> List[StackFrame]:
    """Stack of frames, outermost first, one line number per position."""
    return [
        StackFrame(cls, method, "Service.java", 10 + i)
        for i, method in enumerate(methods)
    ]


@pytest.fixture
def stack_factory():
    return make_stack


@pytest.fixture
def checkout_samples() -> List[Tuple[List[StackFrame], ThreadState]]:
    """
    Overlapping (stack, thread state) samples from a web request.

    Resulting tree (every leaf RUNNABLE, so no interior node has self samples):
        service(5)
          checkout(4)
            charge[RUNNABLE](2)
            reserve[RUNNABLE](1)
            charge(1)
              sleep[RUNNABLE](1)
          browse[RUNNABLE](1)
    """
    runnable = ThreadState.RUNNABLE
    return [
        (make_stack("service", "checkout", "charge"), runnable),
        (make_stack("service", "checkout", "charge"), runnable),
        (make_stack("service", "checkout", "reserve"), runnable),
        (make_stack("service", "browse"), runnable),
        (make_stack("service", "checkout", "charge", "sleep"), runnable),
    ]


@pytest.fixture
def checkout_tree(checkout_samples) -> MutableProfileTree:
    tree = MutableProfileTree()
    for frames, state in checkout_samples:
        tree.merge_sample(frames, state)
    return tree


# =============================================================================
# Test Markers
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow running")
    config.addinivalue_line("markers", "integration: marks integration tests")
