from whatsapp_bridge.worker.main import main

main()
