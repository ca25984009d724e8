from .user import User
from .formula import Formula, FormulaCustomization, FormulaVersionChange
from .notification import Notification
from .review_schedule import ReviewSchedule
