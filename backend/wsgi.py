from freshroute import create_app

app = create_app()
