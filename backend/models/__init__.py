from models.profile import Profile
from models.room_code import RoomCode
from models.user import User

__all__ = [
	"Profile",
	"RoomCode",
	"User",
]
