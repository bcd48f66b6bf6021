"""Tests per la stima di avanzamento: tempo trascorso, ETA, budget."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app.services.progress_estimator import (
    BUDGET_BOOKS,
    BUDGET_TIME,
    budget_exhausted_reason,
    compute_progress,
    elapsed_seconds,
    estimate_remaining_seconds,
    extraction_rate,
    progress_percentage,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def make_job(**overrides):
    """Oggetto con gli stessi attributi di ExtractionJob."""
    values = {
        "id": "job-1",
        "status": "running",
        "max_time_minutes": 60,
        "max_books": 100,
        "books_extracted": 0,
        "books_queued": 0,
        "error_count": 0,
        "started_at": T0,
        "paused_at": None,
        "paused_seconds": 0.0,
        "completed_at": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestElapsedSeconds:
    """Tempo di esecuzione effettivo, pause escluse."""

    def test_not_started_is_zero(self):
        job = make_job(status="pending", started_at=None)
        assert elapsed_seconds(job, at(500)) == 0.0

    def test_running_counts_wall_time(self):
        assert elapsed_seconds(make_job(), at(90)) == 90.0

    def test_closed_pauses_are_excluded(self):
        job = make_job(paused_seconds=30.0)
        assert elapsed_seconds(job, at(100)) == 70.0

    def test_frozen_while_paused(self):
        """Il valore resta fermo per tutta la durata della pausa."""
        job = make_job(status="paused", paused_at=at(120))
        assert elapsed_seconds(job, at(120)) == 120.0
        assert elapsed_seconds(job, at(150)) == 120.0
        assert elapsed_seconds(job, at(3600)) == 120.0

    def test_terminal_uses_completed_at(self):
        job = make_job(status="completed", completed_at=at(200), paused_seconds=20.0)
        assert elapsed_seconds(job, at(10_000)) == 180.0

    def test_naive_timestamps_are_utc(self):
        """SQLite restituisce datetime senza fuso: vanno letti come UTC."""
        job = make_job(started_at=T0.replace(tzinfo=None))
        assert elapsed_seconds(job, at(45)) == 45.0

    def test_never_negative(self):
        job = make_job(paused_seconds=500.0)
        assert elapsed_seconds(job, at(100)) == 0.0


class TestPauseResumeTimeline:
    """Pausa a 120s, 30s di attesa, ripresa, 10s di esecuzione."""

    def test_pause_then_resume_timeline(self):
        running = make_job(books_extracted=12)
        assert elapsed_seconds(running, at(120)) == 120.0

        paused = make_job(status="paused", paused_at=at(120), books_extracted=12)
        assert compute_progress(paused, at(150)).elapsed_seconds == 120.0

        # Alla ripresa il controller somma la pausa chiusa e azzera paused_at
        resumed = make_job(paused_seconds=30.0, books_extracted=12)
        assert compute_progress(resumed, at(160)).elapsed_seconds == 130.0
        assert resumed.books_extracted == 12
        assert resumed.started_at == T0


class TestEstimateRemaining:
    def test_rate_zero_without_elapsed_time(self):
        assert extraction_rate(5, 0) == 0.0
        assert extraction_rate(10, 20) == 0.5

    def test_no_books_yet_uses_time_budget(self):
        job = make_job(max_time_minutes=10)
        assert estimate_remaining_seconds(job, 60.0) == 540.0

    def test_min_of_count_and_time(self):
        # 10 libri in 100s -> 0.1 libri/s, 90 libri mancanti -> 900s; tempo: 3500s
        job = make_job(books_extracted=10)
        assert estimate_remaining_seconds(job, 100.0) == pytest.approx(900.0)

    def test_time_budget_wins_when_shorter(self):
        # 1 libro in 100s -> 99 mancanti = 9900s; tempo: 5*60 - 100 = 200s
        job = make_job(books_extracted=1, max_time_minutes=5)
        assert estimate_remaining_seconds(job, 100.0) == pytest.approx(200.0)

    def test_time_remaining_floored_at_zero(self):
        job = make_job(max_time_minutes=1)
        assert estimate_remaining_seconds(job, 120.0) == 0.0

    @pytest.mark.parametrize("status", ["stopped", "completed", "failed"])
    def test_terminal_jobs_have_no_eta(self, status):
        job = make_job(status=status, books_extracted=10, completed_at=at(100))
        assert estimate_remaining_seconds(job, 100.0) == 0.0

    def test_pending_job_has_no_eta(self):
        job = make_job(status="pending", started_at=None)
        assert estimate_remaining_seconds(job, 0.0) == 0.0


class TestComputeProgress:
    def test_snapshot_fields(self):
        job = make_job(books_extracted=25, books_queued=27, error_count=2)
        progress = compute_progress(job, at(250))

        assert progress.job_id == "job-1"
        assert progress.status == "running"
        assert progress.books_extracted == 25
        assert progress.books_queued == 27
        assert progress.error_count == 2
        assert progress.elapsed_seconds == 250.0
        assert progress.progress_percentage == 25.0
        # 0.1 libri/s, 75 mancanti -> 750s; tempo: 3350s
        assert progress.estimated_remaining_seconds == pytest.approx(750.0)

    def test_does_not_mutate_job(self):
        job = make_job(books_extracted=3)
        before = dict(vars(job))
        compute_progress(job, at(30))
        compute_progress(job, at(60))
        assert vars(job) == before

    def test_percentage_capped(self):
        assert progress_percentage(150, 100) == 100.0
        assert progress_percentage(1, 3) == 33.33
        assert progress_percentage(0, 0) == 0.0


class TestBudgetReason:
    def test_none_while_within_budget(self):
        assert budget_exhausted_reason(make_job(books_extracted=99), at(3599)) is None

    def test_book_budget(self):
        assert budget_exhausted_reason(make_job(books_extracted=100), at(10)) == BUDGET_BOOKS

    def test_time_budget(self):
        assert budget_exhausted_reason(make_job(max_time_minutes=1), at(60)) == BUDGET_TIME

    def test_time_budget_ignores_paused_intervals(self):
        job = make_job(max_time_minutes=1, paused_seconds=30.0)
        assert budget_exhausted_reason(job, at(60)) is None
        assert budget_exhausted_reason(job, at(90)) == BUDGET_TIME

    def test_books_checked_before_time(self):
        job = make_job(books_extracted=100, max_time_minutes=1)
        assert budget_exhausted_reason(job, at(120)) == BUDGET_BOOKS

    def test_not_started_never_exhausts_time(self):
        job = make_job(status="pending", started_at=None, max_time_minutes=1)
        assert budget_exhausted_reason(job, at(10_000)) is None
