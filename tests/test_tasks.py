from unittest import mock

import pytest
from celery.exceptions import Retry

from billing import services as billing_services
from billing.models import Invoice
from billing.tasks import issue_invoice_task
from core.exceptions import ConflictError
from orders.models import Order
from orders.services import ledger


pytestmark = pytest.mark.django_db


def _complete(order):
    for status in (Order.STATUS_ACCEPTED, Order.STATUS_IN_KITCHEN, Order.STATUS_READY,
                   Order.STATUS_SERVED, Order.STATUS_COMPLETED):
        order = ledger.transition_status(order, status)
    return order


def test_completion_schedules_invoice_on_commit(make_order, django_capture_on_commit_callbacks):
    order = make_order()
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        order = _complete(order)

    assert len(callbacks) == 1
    invoice = Invoice.objects.get(order=order)
    assert invoice.invoice_number.startswith("BDK-")


def test_other_transitions_schedule_nothing(make_order, django_capture_on_commit_callbacks):
    order = make_order()
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        ledger.transition_status(order, Order.STATUS_CANCELED)
    assert callbacks == []
    assert not Invoice.objects.exists()


def test_task_skips_unfinished_and_missing_orders(make_order):
    order = make_order()
    assert issue_invoice_task.delay(order.pk).get() is None
    assert issue_invoice_task.delay(987654).get() is None
    assert not Invoice.objects.exists()


def test_task_returns_number_and_is_idempotent(make_order):
    order = _complete(make_order())
    first = issue_invoice_task.delay(order.pk).get()
    second = issue_invoice_task.delay(order.pk).get()
    assert first == second
    assert Invoice.objects.count() == 1


def test_task_retries_on_conflict(make_order):
    order = _complete(make_order())

    with mock.patch("billing.tasks.assign_invoice_number", side_effect=ConflictError("busy")), \
            mock.patch.object(issue_invoice_task, "retry", side_effect=Retry()) as retry:
        with pytest.raises(Retry):
            issue_invoice_task(order.pk)

    retry.assert_called_once()
    assert isinstance(retry.call_args.kwargs["exc"], ConflictError)
    assert retry.call_args.kwargs["countdown"] == issue_invoice_task.default_retry_delay
    assert not Invoice.objects.exists()


def test_retry_after_conflict_issues_the_number(make_order):
    order = _complete(make_order())
    real = billing_services.assign_invoice_number
    calls = {"n": 0}

    def flaky(o):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConflictError("busy")
        return real(o)

    with mock.patch("billing.tasks.assign_invoice_number", side_effect=flaky), \
            mock.patch.object(issue_invoice_task, "retry", side_effect=Retry()):
        with pytest.raises(Retry):
            issue_invoice_task(order.pk)
        number = issue_invoice_task(order.pk)

    assert calls["n"] == 2
    assert number == Invoice.objects.get(order=order).invoice_number
