from buyer_leads.core.app_factory import create_app

app = create_app()
