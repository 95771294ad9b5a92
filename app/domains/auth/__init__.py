from .dependencies import get_current_user
from .entities import UserInfo
