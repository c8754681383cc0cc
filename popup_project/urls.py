from django.urls import path, include

urlpatterns = [
    path('api/billing/', include('subscriptions.urls')),
    path('api/', include('popup_app.urls')),
]
