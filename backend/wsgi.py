from kasir import create_app

app = create_app()
