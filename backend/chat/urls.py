from django.urls import path

from chat import views

app_name = "chat"

urlpatterns = [
    path(
        "reservations/<int:pk>/chat/messages/",
        views.chat_messages,
        name="chat-messages",
    ),
]
