"""
Data Access Object (DAO) package.

WHY: DAOs keep SQL out of the services.
"""

from boinvit.dao.base import BaseDAO
from boinvit.dao.business import BusinessDAO, StaffDAO, ClientDAO
from boinvit.dao.booking import BookingDAO
from boinvit.dao.payment import PaymentTransactionDAO, ClientBusinessTransactionDAO
from boinvit.dao.subscription import SubscriptionDAO
from boinvit.dao.events import SecurityEventDAO, SystemEventDAO

__all__ = [
    "BaseDAO",
    "BusinessDAO",
    "StaffDAO",
    "ClientDAO",
    "BookingDAO",
    "PaymentTransactionDAO",
    "ClientBusinessTransactionDAO",
    "SubscriptionDAO",
    "SecurityEventDAO",
    "SystemEventDAO",
]
