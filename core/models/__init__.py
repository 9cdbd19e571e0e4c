from .user import User
from .payment_record import PaymentRecord
from .chat_session import ChatSession
from .user_notice import UserNotice
from .base import *
