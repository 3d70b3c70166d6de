from django.urls import path

from . import api

app_name = "spaces"

urlpatterns = [
    path("<int:pk>/quote/", api.space_quote, name="space-quote"),
]
