from django.urls import path

from . import views

urlpatterns = [
    path('templates/', views.templates_list, name='templates'),
    path('contracts/', views.contracts_collection, name='contracts'),
    path('contracts/stats/', views.contract_stats, name='contract-stats'),
    path('contracts/<uuid:contract_id>/', views.contract_detail, name='contract-detail'),
    path('contracts/<uuid:contract_id>/send/', views.contract_send, name='contract-send'),
    path('contracts/<uuid:contract_id>/resend/', views.contract_resend, name='contract-resend'),
    path('contracts/<uuid:contract_id>/void/', views.contract_void, name='contract-void'),
    path('contracts/<uuid:contract_id>/cancel/', views.contract_cancel, name='contract-cancel'),
    path('contracts/<uuid:contract_id>/generate-pdf/', views.contract_generate_pdf, name='contract-generate-pdf'),
    path('contracts/<uuid:contract_id>/regenerate-pdf/', views.contract_regenerate_pdf, name='contract-regenerate-pdf'),
    path('contracts/<uuid:contract_id>/verify-pdf/', views.contract_verify_pdf, name='contract-verify-pdf'),
    path('contracts/<uuid:contract_id>/pdf-info/', views.contract_pdf_info, name='contract-pdf-info'),
    path('contracts/<uuid:contract_id>/events/', views.contract_events, name='contract-events'),

    # Public signing flow (token is the credential)
    path('sign/<str:token>/', views.signing_session, name='signing-session'),
    path('sign/<str:token>/sign/', views.signing_sign, name='signing-sign'),
    path('sign/<str:token>/decline/', views.signing_decline, name='signing-decline'),
]
