from lilium import create_app

app = create_app()
