from festchat.crud.user_crud import user_crud
from festchat.crud.chat_crud import chat_crud
from festchat.crud.message_crud import message_crud

__all__ = [
    "user_crud",
    "chat_crud",
    "message_crud",
]
