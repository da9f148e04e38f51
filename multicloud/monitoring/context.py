# multicloud/monitoring/context.py
"""
Context helpers using contextvars for request/user/account propagation.
"""
import contextvars

request_id_var = contextvars.ContextVar("request_id", default=None)
user_id_var = contextvars.ContextVar("user_id", default=None)
account_id_var = contextvars.ContextVar("account_id", default=None)

def set_request_context(request_id=None, user_id=None, account_id=None):
    if request_id is not None:
        request_id_var.set(request_id)
    if user_id is not None:
        user_id_var.set(user_id)
    if account_id is not None:
        account_id_var.set(account_id)

def get_request_context():
    return {
        "request_id": request_id_var.get(),
        "user_id": user_id_var.get(),
        "account_id": account_id_var.get(),
    }
