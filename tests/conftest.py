import sys
from datetime import datetime, timezone
from pathlib import Path
import pytest

# Ensure project root is on sys.path so tests can import the `trivia_engine` package
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlmodel import SQLModel, create_engine  # noqa: E402


def utc(*args):
	return datetime(*args, tzinfo=timezone.utc)


class FakeClock:
	"""Monotonic clock stand-in for the submission buffer."""

	def __init__(self, start=1000.0):
		self.now = start

	def __call__(self):
		return self.now

	def advance(self, seconds):
		self.now += seconds


@pytest.fixture(autouse=True)
def reset_shared_state():
	# Clear in-memory caches and buffers between tests to avoid cross-test flakiness
	from trivia_engine import crud
	from trivia_engine.anticheat import SubmissionBuffer
	from trivia_engine.cache import get_cache
	get_cache().clear()
	crud.submission_buffer = SubmissionBuffer(clock=FakeClock())
	yield
	get_cache().clear()


@pytest.fixture
def config():
	from trivia_engine.config import load_config
	return load_config(environ={})


@pytest.fixture
def engine(tmp_path):
	from trivia_engine import crud
	db = tmp_path / 'engine.db'
	eng = create_engine(f'sqlite:///{db}', connect_args={"check_same_thread": False})
	SQLModel.metadata.create_all(eng)
	crud.engine = eng
	return eng
