from datetime import timedelta

from schoollib.extensions import db
from schoollib.models.transaction import Transaction
from schoollib.tasks.overdue_sweep import run_overdue_sweep, run_overdue_sweep_job
from schoollib.tasks.scheduler import start_scheduler, stop_scheduler

from conftest import TODAY


def _statuses():
    db.session.expire_all()
    return {t.id: t.status for t in Transaction.query.all()}


def test_sweep_marks_only_past_due_borrowed_loans(make_student, make_book, make_loan):
    student = make_student()
    late = make_loan(student, make_book(), due=TODAY - timedelta(days=2))
    due_today = make_loan(student, make_book(), due=TODAY)
    returned = make_loan(student, make_book(), status="returned", due=TODAY - timedelta(days=9))

    result = run_overdue_sweep(today=TODAY)

    assert result.count == 1
    assert result.dry_run is False
    statuses = _statuses()
    assert statuses[late.id] == "overdue"
    assert statuses[due_today.id] == "borrowed"
    assert statuses[returned.id] == "returned"


def test_sweep_twice_updates_nothing_the_second_time(make_student, make_book, make_loan):
    student = make_student()
    make_loan(student, make_book(), due=TODAY - timedelta(days=1))
    make_loan(student, make_book(), due=TODAY - timedelta(days=4))

    assert run_overdue_sweep(today=TODAY).count == 2
    assert run_overdue_sweep(today=TODAY).count == 0


def test_dry_run_previews_without_changes(make_student, make_book, make_loan):
    student = make_student(first_name="Ana", last_name="Reyes")
    tx = make_loan(student, make_book(title="Florante at Laura"), due=TODAY - timedelta(days=3))

    result = run_overdue_sweep(today=TODAY, dry_run=True)

    assert result.dry_run is True
    assert result.count == 1
    row = result.rows[0]
    assert row["id"] == tx.id
    assert row["student"] == "Reyes, Ana"
    assert row["book"] == "Florante at Laura"
    assert row["days_overdue"] == 3
    assert _statuses()[tx.id] == "borrowed"


def test_scheduler_job_runs_in_app_context(app, make_student, make_book, make_loan):
    # due far enough back that the real clock is past it
    tx = make_loan(make_student(), make_book(), borrowed=TODAY - timedelta(days=400), due=TODAY - timedelta(days=393))

    result = run_overdue_sweep_job(app)

    assert result.count == 1
    assert _statuses()[tx.id] == "overdue"


def test_scheduler_registers_daily_job(app):
    app.config["OVERDUE_SWEEP_HOUR"] = 2

    scheduler = start_scheduler(app)
    try:
        job = scheduler.get_job("overdue_sweep_job")
        assert job is not None
        assert "hour='2'" in str(job.trigger)
        assert app.extensions["apscheduler"] is scheduler
    finally:
        stop_scheduler(app)
    assert not scheduler.running
