from app.parkdesk import create_app

app = create_app()
