from apptemplate_controller.cli import main

main()
