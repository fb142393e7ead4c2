from django.urls import path

from .views import HelloWorksCallbackView


app_name = "taxes"

urlpatterns = [
    path("helloworks/callback/", HelloWorksCallbackView.as_view(), name="helloworks_callback"),
]
