from novel_studio import create_app

app = create_app()
