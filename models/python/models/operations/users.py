from typing import Any, Dict, Optional

from models.entities.couchbase.users import User, UserData
from models.errors import InvalidRequest, NotFound


async def user_get(user_id: str) -> Optional[User]:
    return await User.get(user_id)


async def user_create_if_not_exists_and_get(user_id: str, email: str) -> User:
    existing_user = await User.get(user_id)
    if existing_user:
        return existing_user
    new_user_data = UserData(email=email)
    return await User.create(new_user_data, key=user_id, user_id=user_id)


async def user_update_contact(user_id: str, data: Dict[str, Any]) -> User:
    """Update display name, phone number and SMS opt-in."""
    user = await User.get(user_id)
    if not user:
        raise NotFound(f"User with ID {user_id} not found")

    allowed_fields = {"display_name", "phone_number", "sms_opt_in"}
    for key, value in data.items():
        if key in allowed_fields:
            setattr(user.data, key, value)

    if user.data.sms_opt_in and not user.data.phone_number:
        raise InvalidRequest("A phone number is required to opt in to SMS")
    return await User.update(user)
