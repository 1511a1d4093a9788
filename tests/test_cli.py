from datetime import timedelta
from decimal import Decimal

from schoollib.extensions import db
from schoollib.models.setting import Setting
from schoollib.models.transaction import Transaction
from schoollib.services.setting_service import DEFAULTS, SettingService

from conftest import TODAY


def test_sweep_dry_run_lists_rows(runner, make_student, make_book, make_loan):
    make_loan(make_student(), make_book(), due=TODAY - timedelta(days=2))

    result = runner.invoke(args=["circulation", "sweep-overdue", "--dry-run", "--date", TODAY.isoformat()])

    assert result.exit_code == 0
    assert "DRY RUN: Would update 1 transaction(s) to overdue status." in result.output
    assert Transaction.query.filter_by(status="overdue").count() == 0


def test_sweep_updates(runner, make_student, make_book, make_loan):
    make_loan(make_student(), make_book(), due=TODAY - timedelta(days=2))

    result = runner.invoke(args=["circulation", "sweep-overdue", "--date", TODAY.isoformat()])
    assert "Updated 1 transaction(s) to overdue status." in result.output

    again = runner.invoke(args=["circulation", "sweep-overdue", "--date", TODAY.isoformat()])
    assert "No overdue transactions found." in again.output


def test_sweep_rejects_bad_date(runner):
    result = runner.invoke(args=["circulation", "sweep-overdue", "--date", "16/03/2026"])
    assert result.exit_code != 0


def test_eligibility(runner, make_student, make_book, make_loan):
    student = make_student(student_code="2026-7777", first_name="Pedro", last_name="Penduko")
    make_loan(student, make_book(), status="returned", fine="5.00")

    result = runner.invoke(args=["circulation", "eligibility", "2026-7777"])

    assert result.exit_code == 0
    assert "Penduko, Pedro: not eligible. Student has unpaid fines that must be settled first." in result.output


def test_borrow_and_return(runner, make_student, make_book, operator):
    make_student(student_code="2026-1000")
    book = make_book(accession_number="ACC-42", copies=2)

    result = runner.invoke(args=["circulation", "borrow", "2026-1000", "ACC-42", "librarian"])
    assert result.exit_code == 0, result.output
    tx = Transaction.query.one()
    assert f"Transaction {tx.id}:" in result.output

    result = runner.invoke(args=["circulation", "return", str(tx.id), "--condition", "fair"])
    assert result.exit_code == 0, result.output
    assert "returned. No fine." in result.output
    db.session.refresh(book)
    assert book.copies_available == 2
    assert book.condition == "fair"


def test_borrow_unavailable_book_exits_nonzero(runner, make_student, make_book, operator):
    make_student(student_code="2026-1001")
    make_book(accession_number="ACC-0", copies=1, copies_available=0)

    result = runner.invoke(args=["circulation", "borrow", "2026-1001", "ACC-0", "librarian"])

    assert result.exit_code == 1
    assert "All copies are currently borrowed." in result.output


def test_borrow_unknown_student(runner, operator):
    result = runner.invoke(args=["circulation", "borrow", "nobody", "ACC-1", "librarian"])
    assert result.exit_code == 1
    assert "No student with code 'nobody'." in result.output


def test_return_twice_exits_nonzero(runner, make_student, make_book, make_loan):
    tx = make_loan(make_student(), make_book(), status="returned")

    result = runner.invoke(args=["circulation", "return", str(tx.id)])

    assert result.exit_code == 1
    assert "This book has already been returned." in result.output


def test_fine_breakdown(runner, make_student, make_book, make_loan):
    tx = make_loan(make_student(), make_book(), borrowed=TODAY - timedelta(days=10), due=TODAY - timedelta(days=5))
    tx.returned_date = TODAY
    tx.status = "returned"
    tx.fine_amount = Decimal("20.00")
    db.session.commit()

    result = runner.invoke(args=["circulation", "fine", str(tx.id)])

    assert result.exit_code == 0
    assert "(5 days overdue - 1 grace)" in result.output


def test_pay_and_waive(runner, make_student, make_book, make_loan):
    paid = make_loan(make_student(), make_book(), status="returned", fine="20.00")
    waived = make_loan(make_student(), make_book(), status="returned", fine="35.00")

    result = runner.invoke(args=["circulation", "pay-fine", str(paid.id), "5", "--method", "gcash"])
    assert result.exit_code == 0
    assert "Remaining balance: ₱15.00" in result.output

    result = runner.invoke(args=["circulation", "waive-fine", str(waived.id), "Lost in typhoon"])
    assert result.exit_code == 0
    db.session.refresh(waived)
    assert waived.fine_amount == Decimal("0.00")
    assert "Fine waived: Lost in typhoon" in waived.notes


def test_pay_fine_rejected_exits_nonzero(runner, make_student, make_book, make_loan):
    tx = make_loan(make_student(), make_book(), status="returned")

    result = runner.invoke(args=["circulation", "pay-fine", str(tx.id), "5"])

    assert result.exit_code == 1
    assert "This transaction has no fine to pay." in result.output


def test_settings_init_set_and_reset(runner):
    result = runner.invoke(args=["settings", "init"])
    assert f"Created {len(DEFAULTS)} default setting(s)." in result.output
    assert Setting.query.count() == len(DEFAULTS)

    result = runner.invoke(args=["settings", "set", "grace_period", "2"])
    assert result.exit_code == 0
    assert SettingService.grace_period() == 2

    result = runner.invoke(args=["settings", "set", "grace", "2"])
    assert result.exit_code == 1

    result = runner.invoke(args=["settings", "reset", "--yes"])
    assert result.exit_code == 0
    assert SettingService.grace_period() == 1


def test_settings_show(runner):
    result = runner.invoke(args=["settings", "show"])
    assert result.exit_code == 0
    assert "max_books_per_student" in result.output
