from freightdesk import create_app

app = create_app()
