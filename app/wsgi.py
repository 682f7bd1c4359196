from app.absensi import create_app

app = create_app()
