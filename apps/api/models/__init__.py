"""Models package."""

from .user import User, Role
from .restaurant import Restaurant
from .balance import UserRestaurantBalance
from .group import RestaurantGroup, GroupMembership, GroupJoinRequest
from .scan_log import ScanLog, StarsTransaction
from .purchase import Purchase
from .gift import Gift
from .top_up import TopUpPackage, TopUp
from .subscription import Plan, Subscription, SubscriptionStatus
from .notification import Notification
