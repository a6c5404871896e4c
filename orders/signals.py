from django.dispatch import Signal

# Sent after a status change is committed to the order row.
# kwargs: order, old, new, by_user
order_status_changed = Signal()
