from app.wellness import create_app

app = create_app()
